"""
Plan graph export
Nodes and edges for rendering a todo list as a dependency graph.
"""
from .action_plan import Task


def tasks_to_graph(tasks: list[Task]) -> dict:
    """
    {"nodes": [...], "edges": [...]} with one edge per dependency, pointing
    from the prerequisite to the dependent todo. References that match no
    todo (by id or title) are left out.
    """
    by_ref = {t.title: t for t in tasks if t.title}
    by_ref.update({t.id: t for t in tasks})

    nodes = [
        {
            "id": task.id,
            "label": task.title,
            "agentId": task.provider_id,
            "agentType": task.provider_kind,
            "status": task.status.value,
        }
        for task in tasks
    ]

    edges = []
    seen = set()
    for task in tasks:
        for reference in task.dependencies:
            parent = by_ref.get(reference)
            if parent is None:
                continue
            key = (parent.id, task.id)
            if key in seen:
                continue
            seen.add(key)
            edges.append({"id": f"{parent.id}->{task.id}", "source": parent.id, "target": task.id})

    return {"nodes": nodes, "edges": edges}
