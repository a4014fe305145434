"""Result serialization and visual artifacts."""

from .results_writer import ResultsWriter, portion_result_payload, scale_source_payload

__all__ = ["ResultsWriter", "portion_result_payload", "scale_source_payload"]
