from rest_framework.routers import DefaultRouter

from apps.rewards.views import ScratchCardViewSet

router = DefaultRouter()
router.register("scratch-cards", ScratchCardViewSet, basename="scratch-card")

urlpatterns = router.urls
