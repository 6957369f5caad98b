"""Collaborator adapters consumed by the sync pipeline.

Modules
-------
protocols
    ``GraphEngine``, ``TemplateEngine``, ``SyntaxValidator``, ``Formatter``
    and ``CompilationChecker`` Protocols.
rdf_graph
    ``RdflibGraphEngine``: rdflib parsing and SPARQL, pyshacl shapes.
templates
    ``SandboxedTemplateEngine``: jinja2 sandbox with a render deadline
    and an output size cap.
languages
    Language detection plus the default syntax validators, formatters and
    compilation checkers.
"""
