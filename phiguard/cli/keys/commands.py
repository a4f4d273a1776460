import typer

from phiguard.auth.tokens import generate_secret
from phiguard.core.crypto import generate_key

app = typer.Typer(help="Secret generation commands")


@app.command("generate")
def generate():
    """
    Print a fresh PHI_ENCRYPTION_KEY and JWT_SECRET in .env format.
    """
    typer.echo(f'PHI_ENCRYPTION_KEY="{generate_key()}"')
    typer.echo(f'JWT_SECRET="{generate_secret()}"')
