from .entrypoints.fastapi_app import create_app

# uvicorn rentmap.main:app --reload  (from backend/)
app = create_app()
