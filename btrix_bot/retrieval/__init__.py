from btrix_bot.retrieval.intent import classify_intent
from btrix_bot.retrieval.retriever import KnowledgeRetriever, RetrievalError, build_context

__all__ = ["KnowledgeRetriever", "RetrievalError", "build_context", "classify_intent"]
