"""Tolerance Module: delivery tolerance settings and their resolution."""

from erp_modules.tolerance.service import ToleranceModuleService

__all__ = ["ToleranceModuleService"]
