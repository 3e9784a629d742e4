"""
Speaker embedding service built on the SpeechBrain ECAPA-TDNN model.

Embeddings are 192-dimensional. Stored voice templates are the float32
little-endian bytes of an embedding, so the profile store only ever sees an
opaque blob.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

import numpy as np
import torch
import torchaudio
from speechbrain.inference import EncoderClassifier

logger = logging.getLogger(__name__)

EMBEDDING_DIM = 192
TEMPLATE_DTYPE = np.dtype('<f4')


class EmbeddingService:
    """Service for generating and comparing speaker embeddings."""

    def __init__(self, model_cache_dir: Optional[str] = None, model_source: str = "speechbrain/spkrec-ecapa-voxceleb"):
        """
        Initialize the embedding service.

        Args:
            model_cache_dir: Directory to cache the model files. If None, uses system temp dir.
            model_source: Pretrained model identifier
        """
        self.model_cache_dir = model_cache_dir or os.path.join(tempfile.gettempdir(), "speechbrain_models")
        self.model_source = model_source
        self.model: Optional[EncoderClassifier] = None
        self._model_loaded = False

        torch.set_num_threads(1)
        Path(self.model_cache_dir).mkdir(parents=True, exist_ok=True)

    def _load_model(self) -> None:
        """Load the pretrained model on first use, CPU only."""
        if self._model_loaded:
            return

        try:
            logger.info(f"Loading SpeechBrain model {self.model_source}...")
            self.model = EncoderClassifier.from_hparams(
                source=self.model_source,
                savedir=self.model_cache_dir,
                run_opts={"device": "cpu"}
            )
            self._model_loaded = True
            logger.info("SpeechBrain model loaded successfully")

        except Exception as e:
            logger.error(f"Failed to load SpeechBrain model: {e}")
            raise RuntimeError(f"Model loading failed: {e}")

    def generate_embedding(self, wav_data: bytes) -> np.ndarray:
        """
        Generate a 192-dimensional speaker embedding from 16kHz mono WAV bytes.

        Raises:
            RuntimeError: If model loading or embedding generation fails
            ValueError: If the audio is too short
        """
        self._load_model()

        with tempfile.NamedTemporaryFile(suffix='.wav') as temp_file:
            temp_file.write(wav_data)
            temp_file.flush()

            try:
                waveform, sample_rate = torchaudio.load(temp_file.name)
            except Exception as e:
                raise RuntimeError(f"Failed to decode audio: {e}")

        if waveform.shape[1] < sample_rate * 0.5:
            raise ValueError("Audio too short (minimum 0.5 seconds required)")

        if waveform.shape[0] > 1:
            waveform = torch.mean(waveform, dim=0, keepdim=True)

        if sample_rate != 16000:
            waveform = torchaudio.transforms.Resample(sample_rate, 16000)(waveform)

        try:
            with torch.no_grad():
                embedding = self.model.encode_batch(waveform).squeeze().cpu().numpy()
        except Exception as e:
            logger.error(f"Failed to generate embedding: {e}")
            raise RuntimeError(f"Embedding generation failed: {e}")

        if embedding.shape != (EMBEDDING_DIM,):
            raise RuntimeError(f"Unexpected embedding shape: {embedding.shape}, expected ({EMBEDDING_DIM},)")

        return embedding

    @staticmethod
    def compute_cosine_similarity(embedding1: np.ndarray, embedding2: np.ndarray) -> float:
        """
        Cosine similarity between two embeddings, in [-1, 1].

        Raises:
            ValueError: If embeddings have different dimensions or zero norm
        """
        if embedding1.shape != embedding2.shape:
            raise ValueError(f"Embedding dimensions don't match: {embedding1.shape} vs {embedding2.shape}")

        norm1 = np.linalg.norm(embedding1)
        norm2 = np.linalg.norm(embedding2)
        if norm1 == 0 or norm2 == 0:
            raise ValueError("Cannot compute similarity with zero-norm embedding")

        similarity = np.dot(embedding1, embedding2) / (norm1 * norm2)
        return float(np.clip(similarity, -1.0, 1.0))

    @staticmethod
    def validate_embedding(embedding: np.ndarray) -> bool:
        """Check shape, finiteness and non-zero content of an embedding."""
        if not isinstance(embedding, np.ndarray):
            return False
        if embedding.ndim != 1 or embedding.shape[0] != EMBEDDING_DIM:
            return False
        if not np.isfinite(embedding).all():
            return False
        if np.allclose(embedding, 0):
            return False
        return True

    @staticmethod
    def encode_template(embedding: np.ndarray) -> bytes:
        return np.asarray(embedding, dtype=TEMPLATE_DTYPE).tobytes()

    @staticmethod
    def decode_template(template: bytes) -> np.ndarray:
        """
        Decode a stored voice template.

        Raises:
            ValueError: If the blob is not a 192-dimensional float32 vector
        """
        if len(template) != EMBEDDING_DIM * TEMPLATE_DTYPE.itemsize:
            raise ValueError(f"Voice template has {len(template)} bytes, expected {EMBEDDING_DIM * TEMPLATE_DTYPE.itemsize}")
        return np.frombuffer(template, dtype=TEMPLATE_DTYPE).astype(np.float64)
