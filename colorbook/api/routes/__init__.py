from . import exports, generation, images, tasks

__all__ = ["exports", "generation", "images", "tasks"]
