from tillsync import create_app

app = create_app()
