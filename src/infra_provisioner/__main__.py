from infra_provisioner.cli import app

app()
