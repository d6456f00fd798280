#!/usr/bin/env python3
"""Run the catalog API with uvicorn."""

import os

import uvicorn


def main() -> None:
    host = os.environ.get("API_HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "3000"))
    uvicorn.run("catalog_api.main:app", host=host, port=port, reload=False)


if __name__ == "__main__":
    main()
