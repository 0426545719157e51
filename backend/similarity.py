from __future__ import annotations

import asyncio
import threading
from typing import List, Optional, Protocol

import numpy as np
from pydantic import BaseModel

from logger import get_logger, log_pipeline_event

logger = get_logger("TriviaWars.similarity")


class Embedder(Protocol):
    def embed(self, text: str) -> List[float]:
        ...


class SentenceTransformerEmbedder:
    """Local sentence-transformers embeddings, loaded on first use."""

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        self.model_name = model_name
        self._model = None
        self._lock = threading.Lock()

    def _load(self):
        with self._lock:
            if self._model is None:
                from sentence_transformers import SentenceTransformer  # pip install trivia-wars[similarity]
                logger.info(f"Loading embedding model {self.model_name}")
                self._model = SentenceTransformer(self.model_name)
        return self._model

    def embed(self, text: str) -> List[float]:
        return self._load().encode([text], normalize_embeddings=True)[0].tolist()


class SimilarQuestion(BaseModel):
    question: str
    similarity: float


class SimilarityResult(BaseModel):
    isSimilar: bool
    similarQuestions: List[SimilarQuestion]


class QuestionIndex:
    """In-process vector store of previously generated questions (cosine similarity).

    Holds at most ``max_size`` questions; the oldest are dropped first.
    """

    def __init__(self, max_size: int = 1000):
        self.max_size = max_size
        self.questions: List[str] = []
        self._vectors: Optional[np.ndarray] = None
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self.questions)

    def add(self, question: str, vector: List[float]) -> None:
        row = _normalize(np.asarray(vector, dtype="float32"))[None, :]
        with self._lock:
            if self._vectors is None:
                self._vectors = row
            else:
                self._vectors = np.vstack([self._vectors, row])
            self.questions.append(question)
            overflow = len(self.questions) - self.max_size
            if overflow > 0:
                del self.questions[:overflow]
                self._vectors = self._vectors[overflow:].copy()

    def match(self, vector: List[float], threshold: float, count: int) -> List[SimilarQuestion]:
        with self._lock:
            if self._vectors is None or count <= 0:
                return []
            query = _normalize(np.asarray(vector, dtype="float32"))
            sims = self._vectors @ query
            order = np.argsort(-sims)[:count]
            return [
                SimilarQuestion(question=self.questions[i], similarity=round(float(sims[i]), 4))
                for i in order
                if sims[i] >= threshold
            ]


def _normalize(v: np.ndarray) -> np.ndarray:
    return v / (np.linalg.norm(v) + 1e-8)


class SimilarityChecker:
    """Embeds a question and looks it up in the index; embedding runs off the event loop."""

    def __init__(self, embedder: Embedder, index: QuestionIndex, threshold: float = 0.8, count: int = 5):
        self.embedder = embedder
        self.index = index
        self.threshold = threshold
        self.count = count

    async def _embed(self, text: str) -> List[float]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.embedder.embed, text)

    async def check(self, question: str) -> SimilarityResult:
        vector = await self._embed(question)
        matches = self.index.match(vector, self.threshold, self.count)
        log_pipeline_event("similarity_checked", data={"matches": len(matches)})
        return SimilarityResult(isSimilar=bool(matches), similarQuestions=matches)

    async def remember(self, question: str) -> None:
        vector = await self._embed(question)
        self.index.add(question, vector)
