from __future__ import annotations

import logging
import threading

import numpy as np
import torch
from FlagEmbedding import BGEM3FlagModel

from .errors import EmbeddingUnavailable

_log = logging.getLogger(__name__)

_MODEL_NAME = "BAAI/bge-m3"
BGE_M3_DIMENSION = 1024


def _get_device() -> str:
    """Return device string, prefer GPU when available."""
    if torch.cuda.is_available():
        return "cuda"
    return "cpu"


class BGEM3EmbeddingProvider:
    """Dense BGE-M3 embeddings, one text at a time.

    The model is loaded on the first `embed` call, so constructing the
    provider is cheap and a missing model only surfaces as an embedding
    failure (which the vector store absorbs).
    """

    def __init__(
        self,
        model_name: str = _MODEL_NAME,
        dimension: int = BGE_M3_DIMENSION,
        max_length: int = 8192,
    ):
        self.model_name = model_name
        self.dimension = dimension
        self.max_length = max_length
        self._model: BGEM3FlagModel | None = None
        self._load_error: Exception | None = None
        self._lock = threading.Lock()

    def get_model(self) -> BGEM3FlagModel:
        """Lazily load the BGE-M3 embedding model.

        A failed load is remembered; later calls fail fast instead of
        retrying the load for every text.
        """
        with self._lock:
            if self._model is not None:
                return self._model
            if self._load_error is not None:
                raise EmbeddingUnavailable(
                    f"BGE-M3 model '{self.model_name}' failed to load: {self._load_error}"
                ) from self._load_error

            device = _get_device()
            use_fp16 = device == "cuda"

            _log.info("Loading BGEM3FlagModel '%s' on device=%s (fp16=%s)", self.model_name, device, use_fp16)
            try:
                self._model = BGEM3FlagModel(
                    self.model_name,
                    use_fp16=use_fp16,
                    device=device,
                )
            except Exception as exc:
                _log.error("Failed to load BGEM3FlagModel '%s': %s", self.model_name, exc, exc_info=True)
                self._load_error = exc
                raise
            return self._model

    def embed(self, text: str) -> np.ndarray:
        model = self.get_model()
        outputs = model.encode(
            [text],
            batch_size=1,
            max_length=self.max_length,
            return_dense=True,
            return_sparse=False,
            return_colbert_vecs=False,
        )
        return np.asarray(outputs["dense_vecs"][0], dtype=np.float32)


__all__ = ["BGEM3EmbeddingProvider", "BGE_M3_DIMENSION"]
