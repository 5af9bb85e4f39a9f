"""Training: artifacts, content-addressed storage and the Trainer."""

from .artifacts import ArtifactBundle, ArtifactStore, serialize, checksum_of
from .trainer import (
    Trainer, TrainingResult, classification_metrics, evaluate, summarize_dataset,
    summarize_split
)

__all__ = [
    'ArtifactBundle', 'ArtifactStore', 'serialize', 'checksum_of',
    'Trainer', 'TrainingResult', 'classification_metrics', 'evaluate',
    'summarize_dataset', 'summarize_split'
]
