import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Directory',
            fields=[
                ('id', models.BigAutoField(
                    auto_created=True,
                    primary_key=True,
                    serialize=False,
                    verbose_name='ID',
                )),
                ('name', models.CharField(max_length=255)),
                ('path', models.CharField(
                    help_text='Full path, e.g. docs/reports',
                    max_length=1000,
                    unique=True,
                )),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('modified_at', models.DateTimeField(auto_now=True)),
                ('parent', models.ForeignKey(
                    blank=True,
                    null=True,
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name='subdirectories',
                    to='files.directory',
                )),
            ],
            options={
                'verbose_name': 'Directory',
                'verbose_name_plural': 'Directories',
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='File',
            fields=[
                ('id', models.BigAutoField(
                    auto_created=True,
                    primary_key=True,
                    serialize=False,
                    verbose_name='ID',
                )),
                ('name', models.CharField(max_length=255)),
                ('path', models.CharField(
                    help_text='Full path in the content store, e.g. docs/a.txt',
                    max_length=1000,
                    unique=True,
                )),
                ('size_bytes', models.BigIntegerField(
                    help_text='File size in bytes',
                )),
                ('content_type', models.CharField(
                    help_text='MIME type supplied on upload or guessed from the name',
                    max_length=255,
                )),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('modified_at', models.DateTimeField(auto_now=True)),
                ('directory', models.ForeignKey(
                    blank=True,
                    null=True,
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name='files',
                    to='files.directory',
                )),
            ],
            options={
                'verbose_name': 'File',
                'verbose_name_plural': 'Files',
                'ordering': ['name'],
                'constraints': [
                    models.CheckConstraint(
                        condition=models.Q(size_bytes__gte=0),
                        name='files_size_bytes_non_negative',
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name='EmbeddedContent',
            fields=[
                ('id', models.BigAutoField(
                    auto_created=True,
                    primary_key=True,
                    serialize=False,
                    verbose_name='ID',
                )),
                ('path', models.CharField(max_length=1000, unique=True)),
                ('content_base64', models.TextField(blank=True, default='')),
                ('content_type', models.CharField(max_length=255)),
                ('size_bytes', models.BigIntegerField(default=0)),
                ('modified_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Embedded Content',
                'verbose_name_plural': 'Embedded Contents',
            },
        ),
    ]
