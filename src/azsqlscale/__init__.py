"""azsqlscale - Azure SQL Database vCore scaling automation

Philosophy:
- Ruthless simplicity
- Brick architecture (self-contained modules)
- Security first (no credentials in code)
- Fail fast with helpful guidance

azsqlscale moves one Azure SQL database (and its geo-replicas) up or down by a
fixed number of vCores, inside configured bounds, and reports every step to a
chat webhook so an operator always knows what happened.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
