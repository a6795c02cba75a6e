"""siteindex — Adjacency projections and link-graph audit for a multi-tenant CMS.

Provides:
    - Single-table keyspace and DynamoDB store primitives
    - Bounded paginated scope collection
    - Adjacency projector (category cards, coupon-code and form-slug pointers)
    - Link graph builder with orphan detection
    - Dynamic list (postGrid) resolver
"""

__version__ = "1.0.0"
