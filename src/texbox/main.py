from .api import create_app

# uvicorn texbox.main:app
app = create_app()
