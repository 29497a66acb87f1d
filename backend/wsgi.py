from logistics import create_app

app = create_app()
