"""Test suite for the formbuilder engine.

This package contains tests for:
- Schema model entities and structural invariants
- Validation engine (required handling, answer types, rule ordering)
- Visibility evaluator (rule grouping, hide-wins resolution)
- Lifecycle tables, optimistic concurrency and the in-memory repository
- Template library and remote options endpoints
- Integration scenarios (publish, archive cascade, conditional requirements)
"""
