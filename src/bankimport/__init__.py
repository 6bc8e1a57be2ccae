"""Bank statement import pipeline."""

__version__ = "0.1.0"


# The CLI pulls in the database layer, so it is only imported on use
def __getattr__(name):
    if name == "main":
        from bankimport.cli.main import main
        return main
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
