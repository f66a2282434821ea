"""bond.credit - agent credit scoring, credit vaults and NEAR wallet tooling."""

__version__ = "0.1.0"
