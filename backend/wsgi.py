from aurora import create_app

app = create_app()
