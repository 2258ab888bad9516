"""Departments module — hierarchy model, in-memory tree, visibility and services."""

from backend.departments.models import Department
from backend.departments.tree import DepartmentNode, DepartmentTree

__all__ = ["Department", "DepartmentNode", "DepartmentTree"]
