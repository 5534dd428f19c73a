"""
envseal activation — the pipeline run on every system rebuild.

    links -> tools -> secrets -> shells -> done

Entry point: ``envseal.activation.orchestrator.activate()``.
"""
