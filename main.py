"""
Root entrypoint — run with:
    uvicorn main:app --reload
    or:  uv run uvicorn main:app --reload

JWT_ACCESS_SECRET and JWT_REFRESH_SECRET must be set (env or .env);
startup fails without them.
"""

from campus_auth.main import create_app

app = create_app()

if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
