from app.facturador import create_app

app = create_app()
