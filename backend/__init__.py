"""
Listwell backend: FastAPI API, database layer, storage, and the job worker.

Run the API with ``uvicorn backend.app:app`` and the worker with
``python -m backend.worker``.
"""
