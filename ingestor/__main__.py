"""Allow running the ingestion CLI as a module: python -m ingestor."""

from ingestor.runner import main

if __name__ == "__main__":
    main()
