"""Fine-tuning loops, losses and pretraining observers."""

from .trainer import DBNTrainer, SGDOptimizer
from .watchers import ConsoleWatcher, PretrainWatcher, SilentWatcher

__all__ = ["ConsoleWatcher", "DBNTrainer", "PretrainWatcher", "SGDOptimizer", "SilentWatcher"]
