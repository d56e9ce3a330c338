"""CLI entrypoint for running schemaledger as a module."""

from schemaledger.cli import cli

if __name__ == "__main__":
    cli()
