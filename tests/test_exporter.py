from concurrent.futures import ThreadPoolExecutor

from ruamel.yaml import YAML

from kubemend.core.document import Document
from kubemend.core.exporter import KubeExporter, render_documents
from kubemend.core.loader import load
from kubemend.core.models import Aggressiveness, Mode
from kubemend.remediation.remediator import Remediator

COMMENTED = """\
apiVersion: apps/v1
kind: Deployment
metadata:
  name: "web"  # public frontend
  labels:
    app: web
spec:
  selector:
    matchLabels:
      app: web
  template:
    metadata:
      labels:
        app: web
    spec:
      containers:
        - name: web
          image: nginx:latest
          ports:
            - containerPort: 80
"""


def safe_load_all(text):
    return [d for d in YAML(typ='safe').load_all(text) if d is not None]


def test_untouched_documents_render_identically():
    text = "apiVersion: v1\nkind: Service\nmetadata:\n  name: web-svc\nspec:\n  selector:\n    app: web\n"
    documents, _ = load(text)
    assert render_documents(documents) == text


def test_remediated_output_keeps_comments_and_quotes():
    documents, _ = load(COMMENTED, source="deploy.yaml")
    plan = Remediator().remediate(documents[0], Mode.FIX, Aggressiveness.AGGRESSIVE)
    rendered = KubeExporter().export([plan.remediated])

    assert "# public frontend" in rendered
    assert 'name: "web"' in rendered
    assert "image: nginx:1.27.2" in rendered
    assert safe_load_all(rendered) == [plan.remediated.to_python()]


def test_new_keys_are_appended_after_existing_ones():
    documents, _ = load(COMMENTED)
    doc = documents[0].with_value(("spec", "replicas"), 2)
    rendered = render_documents([doc])
    lines = rendered.splitlines()
    assert lines.index("  replicas: 2") > lines.index("  selector:")


def test_removed_keys_and_items_disappear():
    documents, _ = load(COMMENTED)
    doc = documents[0].without(("metadata", "labels"))
    doc = doc.with_value(("spec", "template", "spec", "containers", 0, "ports"), [])
    data = safe_load_all(render_documents([doc]))[0]
    assert "labels" not in data["metadata"]
    assert data["spec"]["template"]["spec"]["containers"][0]["ports"] == []


def test_multiple_documents_are_separated_in_order():
    documents, _ = load("kind: A\n---\nkind: B\n---\nkind: C\n")
    rendered = render_documents(documents)
    assert rendered.count("---\n") == 2
    assert [d["kind"] for d in safe_load_all(rendered)] == ["A", "B", "C"]


def test_documents_without_origin_render_from_the_tree():
    doc = Document({"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": "cfg"},
                    "data": {"items": ["a", "b"]}})
    rendered = render_documents([doc])
    assert safe_load_all(rendered) == [doc.to_python()]
    assert "    - a" in rendered


def test_one_exporter_serves_many_threads():
    exporter = KubeExporter()
    batches = []
    for i in range(24):
        text = COMMENTED.replace("web", f"web-{i}")
        documents, _ = load(text + "---\n" + text, source=f"deploy-{i}.yaml")
        batches.append(documents)

    expected = [exporter.export(docs) for docs in batches]
    with ThreadPoolExecutor(max_workers=8) as pool:
        futures = [pool.submit(exporter.export, docs) for docs in batches * 4]
        rendered = [f.result() for f in futures]

    assert rendered == expected * 4
