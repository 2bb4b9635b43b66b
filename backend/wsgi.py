from vpos import create_app

app = create_app()
