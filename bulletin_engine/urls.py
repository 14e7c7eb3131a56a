from django.contrib import admin
from django.urls import path

# Le moteur expose des services Python ; seul l'admin est routé ici.
urlpatterns = [
    path('admin/', admin.site.urls),
]
