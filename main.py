from flyer_bot.main import create_app

app = create_app()


if __name__ == "__main__":
    settings = app.extensions["flyer_bot"].settings
    app.run(host="0.0.0.0", port=settings.port)
