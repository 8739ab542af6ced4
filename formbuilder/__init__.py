"""Form definition and validation engine.

formbuilder models dynamic data-collection forms and everything around them:
- Forms, sections and questions with structural invariants checked on construction
- Declarative validation rules evaluated deterministically, one message per question
- Conditional visibility (show, hide, require, disable) driven by other answers
- Optimistic concurrency with etag/version pairs and an append-only history log
- A region-scoped template library with real usage tracking

Persistence is delegated to an injected repository; the engine keeps no
global state.

Basic usage:
    >>> from formbuilder import FormBuilder
    >>> builder = FormBuilder()
    >>> form = builder.create_form({"name": "Intake", "formType": "intake", "regionId": 1})
    >>> section = builder.create_section(form.id, {"name": "Applicant"})
    >>> question = builder.create_question(section.id, {"tkey": "age", "label": "Age",
    ...                                                 "answerType": "number", "required": True})
    >>> builder.validate_submission(form.id, {"age": ""}).errors[question.id]
    'Age is required'
"""

__version__ = "0.1.0"
__author__ = "FormBuilder Team"

# Version info
VERSION = (0, 1, 0)

# Core exports
from formbuilder.runtime import FormBuilder, ImportResult

# Package metadata
__all__ = [
    "__version__",
    "VERSION",
    "FormBuilder",
    "ImportResult",
]
