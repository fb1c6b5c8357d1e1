# ciflow_workflow.py
# The documented pipeline: compile the Maven project, then scan it.
from __future__ import annotations

from ciflow import wf, job, sh


def workflow():
    return wf(
        job(
            "compile",
            sh("Set up JDK", "java -version"),
            sh("Build with Maven", "mvn -B package --file pom.xml"),
            runs_on="ubuntu-latest",
        ),
        job(
            "security-scan",
            sh("Trivy filesystem scan", "trivy fs --exit-code 1 --severity HIGH,CRITICAL ."),
            sh("Gitleaks secret scan", "gitleaks detect --source . --no-banner"),
            needs=["compile"],
            runs_on="ubuntu-latest",
        ),
    )
