import uvicorn

from .core.settings import load_settings


def main():
    s = load_settings()
    uvicorn.run("texbox.main:app", host=s.host, port=s.port, log_config=None)


if __name__ == "__main__":
    main()
