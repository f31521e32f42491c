"""Durable workflow engine and the sitemap workflow.

Public API::

    from sitezip.workflow import build_engine
    engine = build_engine()
    instance = engine.create({"sitemapUrl": "https://example.com/sitemap.xml"})
"""

from sitezip.workflow.engine import Step, StepContext, WorkflowEngine
from sitezip.workflow.policy import DEFAULT_STEP_CONFIG, StepConfig
from sitezip.workflow.sitemap import SitemapWorkflow, build_engine, validate_payload

__all__ = [
    "Step",
    "StepContext",
    "StepConfig",
    "DEFAULT_STEP_CONFIG",
    "WorkflowEngine",
    "SitemapWorkflow",
    "build_engine",
    "validate_payload",
]
