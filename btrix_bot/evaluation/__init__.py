from btrix_bot.evaluation.learning_loop import LearningLoop, format_report
from btrix_bot.evaluation.metrics import MetricsCollector, RAGRequestRecord, log_rag_request

__all__ = ["MetricsCollector", "RAGRequestRecord", "log_rag_request", "LearningLoop", "format_report"]
