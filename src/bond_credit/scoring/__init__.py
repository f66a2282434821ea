"""Agent credit scoring, credibility tiers and opportunity trust scores."""
