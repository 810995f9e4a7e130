import pytest

from kubemend.core.loader import load

# Deployment with no resources, no probes, no securityContext and a mutable tag
SCENARIO_YAML = """\
apiVersion: apps/v1
kind: Deployment
metadata:
  name: web
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

POD_YAML = """\
apiVersion: v1
kind: Pod
metadata:
  name: worker
spec:
  containers:
    - name: worker
      image: busybox
      imagePullPolicy: Always
"""

SERVICE_YAML = """\
apiVersion: v1
kind: Service
metadata:
  name: web-svc
spec:
  selector:
    app: web
  ports:
    - port: 80
"""

CRONJOB_YAML = """\
apiVersion: batch/v1
kind: CronJob
metadata:
  name: report
  namespace: batch
spec:
  schedule: "0 * * * *"
  jobTemplate:
    spec:
      template:
        spec:
          restartPolicy: OnFailure
          containers:
            - name: report
              image: registry.example.com/report:2.1.0
              resources:
                requests:
                  cpu: "2"
"""


def load_one(text, source="<memory>"):
    documents, errors = load(text, source=source)
    assert not errors, errors
    assert len(documents) == 1
    return documents[0]


@pytest.fixture
def scenario_doc():
    return load_one(SCENARIO_YAML, source="deploy.yaml")


@pytest.fixture
def pod_doc():
    return load_one(POD_YAML, source="pod.yaml")


@pytest.fixture
def service_doc():
    return load_one(SERVICE_YAML, source="svc.yaml")


@pytest.fixture
def cronjob_doc():
    return load_one(CRONJOB_YAML, source="cron.yaml")
