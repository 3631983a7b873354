"""Console entry point: checks settings, then runs the app under uvicorn."""
import sys

import uvicorn

from stockchat.config import Settings


def main():
    serve(Settings.from_env())


def serve(settings: Settings):
    """Start uvicorn with the host, port and reload flag from ``settings``.

    Exits with status 1 when no Gemini key is configured, since every chat
    request would fail with an apology.
    """
    if not settings.gemini_api_key:
        print("ERROR: GEMINI_API_KEY is not set, the translator cannot run", file=sys.stderr)
        print("Example: export GEMINI_API_KEY=your-key", file=sys.stderr)
        sys.exit(1)

    base_url = f"http://{settings.host}:{settings.port}"
    print(f"Inventory store: {settings.mongodb_url} (database '{settings.mongodb_db}')")
    print(f"Translator model: {settings.gemini_model}")
    print(f"Chat endpoint: {base_url}/api/chat/query")
    print(f"API docs: {base_url}/docs")

    uvicorn.run(
        "stockchat.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
    )


if __name__ == "__main__":
    main()
