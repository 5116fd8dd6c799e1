"""Timer-driven online learning batch."""

from hybridrec.logging import get_logger

logger = get_logger(__name__)


async def run_learning_batch() -> dict:
    """Process one pipeline batch if updates are waiting.

    Returns:
        Summary dict; ``processed`` is 0 when nothing ran.
    """
    from hybridrec.runtime import get_runtime

    pipeline = get_runtime().pipeline
    if pipeline.is_processing or len(pipeline.queue) == 0:
        return {"processed": 0, "skipped": True}

    result = await pipeline.process_batch()
    if result is None:
        return {"processed": 0, "skipped": True}

    return {
        "processed": result.size if result.success else 0,
        "skipped": False,
        "success": result.success,
        "loss": result.loss,
    }
