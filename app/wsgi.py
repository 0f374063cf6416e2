from app.irl import create_app

app = create_app()
