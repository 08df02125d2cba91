from sse_simulator.cli import app

app()
