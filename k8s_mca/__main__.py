"""Main entry point for k8s-mca."""

from k8s_mca.cli import cli

if __name__ == "__main__":
    cli()
