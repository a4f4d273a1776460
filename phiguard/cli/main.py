# phiguard/cli/main.py


import typer
from phiguard.cli.keys.commands import app as keys_app
from phiguard.cli.maintenance.commands import app as maintenance_app

app = typer.Typer(help="PHIGuard operator commands")
app.add_typer(keys_app, name="keys")
app.add_typer(maintenance_app, name="maintenance")

if __name__ == "__main__":
    app()
