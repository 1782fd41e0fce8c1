#!/usr/bin/env python
"""Validate the docrag setup: dependencies, configuration and the Ollama embedding model."""
import asyncio
import sys
from pathlib import Path

# Color codes for terminal output
GREEN = "\033[92m"
RED = "\033[91m"
YELLOW = "\033[93m"
BLUE = "\033[94m"
RESET = "\033[0m"


def print_success(msg):
    print(f"{GREEN}✓{RESET} {msg}")


def print_error(msg):
    print(f"{RED}✗{RESET} {msg}")


def print_info(msg):
    print(f"{BLUE}ℹ{RESET} {msg}")


def print_warning(msg):
    print(f"{YELLOW}⚠{RESET} {msg}")


def print_section(title):
    print(f"\n{BLUE}{'=' * 60}{RESET}")
    print(f"{BLUE}{title:^60}{RESET}")
    print(f"{BLUE}{'=' * 60}{RESET}\n")


DEPENDENCIES = [
    ("quart", "Quart web framework"),
    ("hypercorn", "Hypercorn ASGI server"),
    ("httpx", "HTTP client"),
    ("numpy", "Vector math"),
    ("cachetools", "TTL caches"),
    ("fitz", "PyMuPDF PDF extraction"),
    ("yaml", "YAML frontmatter"),
    ("pydantic", "Data validation"),
    ("structlog", "Structured logging"),
]


async def main():
    print_section("docrag - Setup Validation")

    errors = []
    warnings = []

    # 1. Python version check
    print_section("1. Python Environment")
    python_version = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
    print_info(f"Python version: {python_version}")
    if sys.version_info >= (3, 11):
        print_success("Python version >= 3.11")
    else:
        print_error("Python version < 3.11 (required)")
        errors.append("Python version too old")

    in_venv = sys.base_prefix != sys.prefix
    if in_venv:
        print_success("Running in virtual environment")
    else:
        print_warning("Not running in virtual environment (recommended)")
        warnings.append("Not in venv")

    # 2. Import core dependencies
    print_section("2. Core Dependencies")

    for module_name, description in DEPENDENCIES:
        try:
            __import__(module_name)
            print_success(f"{description:30} ({module_name})")
        except ImportError as e:
            print_error(f"{description:30} ({module_name}) - {e}")
            errors.append(f"Missing: {module_name}")

    # 3. Configuration
    print_section("3. Configuration")

    sys.path.insert(0, str(Path(__file__).parent.parent))
    from docrag.config import Settings
    from docrag.exceptions import ConfigurationError

    try:
        settings = Settings.from_env().validate()
    except ConfigurationError as e:
        print_error(f"Invalid configuration: {e}")
        errors.append("Config loading failed")
        return errors, warnings

    print_success("Config loaded successfully")
    print_info(f"  Embedding model: {settings.embedding_model}")
    print_info(f"  Ollama URL: {settings.ollama_base_url}")
    print_info(f"  Chunk size: {settings.chunk_size} chars (overlap {settings.chunk_overlap})")
    print_info(f"  Similarity threshold: {settings.similarity_threshold}")
    print_info(f"  Vector directory: {settings.vector_db_dir}")
    print_info(f"  Documents directory: {settings.documents_dir}")

    try:
        settings.ensure_directories()
        print_success("Data directories exist and are writable")
    except OSError as e:
        print_error(f"Cannot create data directories: {e}")
        errors.append("Data directories unavailable")

    # 4. Ollama service
    print_section("4. Ollama Service")

    import httpx

    from docrag.llm_client import OllamaClient, model_is_installed

    client = OllamaClient(settings.ollama_base_url, timeout=settings.embedding_timeout)
    model_ready = False

    try:
        models = await client.list_models()
        print_success(f"Ollama service running at {settings.ollama_base_url}")
        print_info(f"Found {len(models)} models installed")

        if model_is_installed(settings.embedding_model, models):
            print_success(f"Embedding model available: {settings.embedding_model}")
            model_ready = True
        else:
            print_error(f"Embedding model missing: {settings.embedding_model}")
            print_info(f"  Run: ollama pull {settings.embedding_model}")
            errors.append(f"Missing embedding model: {settings.embedding_model}")

    except httpx.ConnectError:
        print_error("Cannot connect to Ollama service")
        print_info("  Make sure Ollama is running: ollama serve")
        errors.append("Ollama not running")
    except httpx.HTTPError as e:
        print_error(f"Ollama check failed: {e}")
        errors.append(f"Ollama error: {e}")

    # 5. Embedding test
    print_section("5. Embedding API Test")

    if model_ready:
        try:
            response = await client.embeddings(prompt="test", model=settings.embedding_model)
            dimension = len(response.get("embedding") or [])
            if dimension:
                print_success(f"Embedding API working (dimension: {dimension})")
            else:
                print_error("Embedding response missing 'embedding' field")
                errors.append("Embedding API issue")
        except httpx.HTTPError as e:
            print_error(f"Embedding test failed: {e}")
            errors.append(f"API test failed: {e}")
    else:
        print_warning("Skipped (model not available)")

    # 6. Summary
    print_section("Summary")

    if not errors:
        print_success("All checks passed! ✨")
        print_info("  Start the server with: docrag-server")
    else:
        print_error(f"Found {len(errors)} error(s):")
        for i, error in enumerate(errors, 1):
            print(f"  {i}. {error}")

    if warnings:
        print_warning(f"\nFound {len(warnings)} warning(s):")
        for i, warning in enumerate(warnings, 1):
            print(f"  {i}. {warning}")

    print()
    return errors, warnings


if __name__ == "__main__":
    errors, warnings = asyncio.run(main())
    sys.exit(1 if errors else 0)
