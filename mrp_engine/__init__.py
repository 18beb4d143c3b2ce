"""
MRP planning engine.

Computes low-level codes over the BOM graph, explodes BOMs, nets requirements into
recommendations and orchestrates chunked, tiered planning runs per company.
"""
