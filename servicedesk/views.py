from rest_framework.views import APIView
from rest_framework.response import Response


class ApiHomeView(APIView):
    authentication_classes = []
    permission_classes = []

    def get(self, request):
        return Response(
            {
                "message": "Service desk lifecycle API",
                "endpoints": {
                    "admin": "/admin/",
                    "token_obtain": "/api/token/",
                    "token_refresh": "/api/token/refresh/",
                    "schema": "/api/schema/",
                    "swagger": "/api/schema/swagger-ui/",
                    "redoc": "/api/schema/redoc/",
                    "health": "/desk/health/",
                    "workflows": "/desk/workflows/",
                    "tickets": "/desk/tickets/",
                    "sla_policies": "/desk/sla-policies/",
                    "sla_alerts": "/desk/sla-alerts/",
                    "whoami": "/desk/whoami/",
                },
            }
        )
