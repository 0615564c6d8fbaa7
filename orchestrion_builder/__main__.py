from orchestrion_builder.cli import app

app()
