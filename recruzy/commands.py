# recruzy/commands.py

import click
from flask.cli import with_appcontext
from sqlalchemy import or_, select

from recruzy.errors import ServiceError
from recruzy.extensions import db
from recruzy.models import ROLE_ADMIN, ROLE_USER, TEST_STATUS_PUBLISHED, Test, User
from recruzy.services.assignments import assign_missing_tests, assign_test_to_users


@click.command("create-admin")
@with_appcontext
@click.argument("username")
@click.argument("email")
@click.argument("password")
def create_admin(username, email, password):
    """Создает нового пользователя с правами администратора."""
    exists = db.session.scalars(
        select(User).where(or_(User.username == username, User.email == email))
    ).first()
    if exists:
        click.echo("Пользователь с таким именем или email уже существует.")
        return

    admin = User(username=username, email=email.lower(), role=ROLE_ADMIN)
    admin.set_password(password)
    db.session.add(admin)
    db.session.commit()
    click.echo(f"Администратор {username} успешно создан.")


@click.command("reconcile-assignments")
@with_appcontext
@click.option("--user-id", type=int, help="Только для одного пользователя.")
@click.option(
    "--test-id",
    "test_ids",
    type=int,
    multiple=True,
    help="Назначить только эти тесты (можно указать несколько раз).",
)
def reconcile_assignments(user_id, test_ids):
    """Назначает пользователям недостающие опубликованные тесты."""
    if user_id is not None:
        user_ids = [user_id]
    else:
        user_ids = list(
            db.session.scalars(select(User.id).where(User.role == ROLE_USER))
        )

    total = 0
    failed = 0
    for uid in user_ids:
        try:
            missing = assign_missing_tests(uid, test_ids=test_ids or None, trigger="cli")
        except ServiceError as e:
            failed += 1
            click.echo(f"Пользователь {uid}: ошибка - {e.message}", err=True)
            continue
        total += len(missing)
        if missing:
            click.echo(f"Пользователь {uid}: назначено {len(missing)} тестов")

    click.echo(
        f"Готово: пользователей {len(user_ids)}, новых назначений {total}, ошибок {failed}."
    )
    if failed:
        raise SystemExit(1)


@click.command("publish-test")
@with_appcontext
@click.argument("test_id", type=int)
def publish_test(test_id):
    """Публикует тест и назначает его всем пользователям."""
    test = db.session.get(Test, test_id)
    if test is None:
        raise click.ClickException(f"Тест {test_id} не найден.")

    test.status = TEST_STATUS_PUBLISHED
    db.session.commit()

    try:
        assigned = assign_test_to_users(test_id, trigger="cli")
    except ServiceError as e:
        click.echo(f"Тест опубликован, назначения не созданы: {e.message}")
        return
    click.echo(f"Тест {test_id} опубликован и назначен {len(assigned)} пользователям.")


def register_commands(app):
    """Регистрирует CLI-команды в приложении Flask."""
    app.cli.add_command(create_admin)
    app.cli.add_command(reconcile_assignments)
    app.cli.add_command(publish_test)
